"""
Passive performance monitor for the training loop.

Keeps a bounded history of per-game training outcomes, derives an accuracy
proxy (1 - loss/2, clamped to [0, 1]), and raises rate-limited
DegradationAlerts when accuracy drops between consecutive windows or when
feedback fires too often.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Dict, List, Optional

import numpy as np
import pandas as pd

from ..errors import ValidationError
from ..models.latent import LatentDistribution

logger = logging.getLogger(__name__)

ACCURACY_TREND_THRESHOLD = 0.05
VAE_LOSS_TREND_THRESHOLD = 0.1
FEEDBACK_TREND_THRESHOLD = 0.1


@dataclass
class PerformanceRecord:
    timestamp: datetime
    nn_loss: float
    vae_loss: float
    feedback_triggered: bool
    alpha: float
    accuracy: float
    game_id: Optional[str] = None
    outcome: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "nn_loss": self.nn_loss,
            "vae_loss": self.vae_loss,
            "feedback_triggered": self.feedback_triggered,
            "alpha": self.alpha,
            "accuracy": self.accuracy,
            "game_id": self.game_id,
            "outcome": self.outcome,
        }


@dataclass
class DegradationAlert:
    """Monitoring signal; not an error."""

    alert_type: str
    severity: str  # medium, high or critical
    message: str
    timestamp: datetime
    data: Dict = field(default_factory=dict)


AlertHandler = Callable[[DegradationAlert], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PerformanceMonitor:
    """
    Rolling-window monitor with degradation alerts.

    Args:
        monitoring_window: Maximum records retained
        degradation_threshold: Accuracy drop between windows that raises an alert
        convergence_threshold: Mean team sigma below which a team counts as converged
        alert_cooldown: Minimum time between two alerts of the same type
        comparison_window: Size of the recent and prior windows compared
        min_records: Records required before degradation checks run
        feedback_rate_limit: Recent feedback rate above which an alert is raised
        clock: Returns the current time; injectable for tests
    """

    def __init__(
        self,
        monitoring_window: int = 100,
        degradation_threshold: float = 0.2,
        convergence_threshold: float = 0.1,
        alert_cooldown: timedelta = timedelta(hours=1),
        comparison_window: int = 10,
        min_records: int = 20,
        feedback_rate_limit: float = 0.8,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if comparison_window < 1:
            raise ValidationError("comparison_window must be >= 1")
        required = max(min_records, 2 * comparison_window)
        if required > monitoring_window:
            raise ValidationError(
                f"monitoring_window ({monitoring_window}) cannot hold the {required} records degradation checks need"
            )
        self.monitoring_window = monitoring_window
        self.degradation_threshold = degradation_threshold
        self.convergence_threshold = convergence_threshold
        self.alert_cooldown = alert_cooldown
        self.comparison_window = comparison_window
        self.min_records = required
        self.feedback_rate_limit = feedback_rate_limit
        self.clock = clock or _utcnow

        self.records: Deque[PerformanceRecord] = deque(maxlen=monitoring_window)
        self.alerts: Deque[DegradationAlert] = deque(maxlen=monitoring_window)
        self.team_metrics: Dict[str, Dict] = {}
        self.stability: Optional[Dict] = None
        self._last_alert: Dict[str, datetime] = {}
        self._handlers: List[AlertHandler] = []

    @classmethod
    def from_config(cls, config, clock: Optional[Callable[[], datetime]] = None) -> "PerformanceMonitor":
        return cls(
            monitoring_window=config.monitoring_window,
            degradation_threshold=config.degradation_threshold,
            convergence_threshold=config.team_convergence_threshold,
            alert_cooldown=timedelta(seconds=config.alert_cooldown_seconds),
            clock=clock,
        )

    def add_alert_handler(self, handler: AlertHandler) -> None:
        self._handlers.append(handler)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    @staticmethod
    def accuracy_from_loss(loss: float) -> float:
        return float(np.clip(1.0 - loss / 2.0, 0.0, 1.0))

    def record(
        self,
        nn_loss: float,
        vae_loss: float,
        feedback_triggered: bool,
        alpha: float,
        game_id: Optional[str] = None,
        outcome: Optional[str] = None,
    ) -> PerformanceRecord:
        record = PerformanceRecord(
            timestamp=self.clock(),
            nn_loss=float(nn_loss),
            vae_loss=float(vae_loss),
            feedback_triggered=bool(feedback_triggered),
            alpha=float(alpha),
            accuracy=self.accuracy_from_loss(nn_loss),
            game_id=game_id,
            outcome=outcome,
        )
        self.records.append(record)
        self.check_degradation()
        return record

    def record_training_result(self, result, game_id: Optional[str] = None) -> PerformanceRecord:
        """Record a TrainingResult from the feedback trainer."""
        return self.record(
            result.nn_loss, result.vae_loss, result.feedback_triggered, result.alpha,
            game_id=game_id, outcome="updated",
        )

    def record_team_distribution(self, distribution: LatentDistribution) -> None:
        mean_sigma = distribution.mean_sigma
        self.team_metrics[distribution.team_id] = {
            "mean_sigma": mean_sigma,
            "games_processed": distribution.games_processed,
            "confidence": distribution.confidence,
            "uncertainty_level": self.uncertainty_level(mean_sigma),
            "converged": mean_sigma < self.convergence_threshold,
        }

    def record_stability(self, report) -> None:
        """Keep the trainer's latest StabilityReport for the report."""
        data = report.to_dict()
        data["category"] = self.stability_category(report.feedback_rate, report.alpha_decay)
        self.stability = data

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def check_degradation(self) -> List[DegradationAlert]:
        """Evaluate degradation rules and emit any alerts not in cooldown."""
        if len(self.records) < self.min_records:
            return []
        records = list(self.records)
        w = self.comparison_window
        recent = records[-w:]
        prior = records[-2 * w:-w]
        raised = []

        drop = np.mean([r.accuracy for r in prior]) - np.mean([r.accuracy for r in recent])
        if drop > self.degradation_threshold:
            if drop > 0.4:
                severity = "critical"
            elif drop > 0.3:
                severity = "high"
            else:
                severity = "medium"
            alert = self._emit(
                "accuracy_degradation",
                severity,
                f"Accuracy dropped by {drop:.3f} over the last {w} games",
                {"drop": float(drop), "window": w},
            )
            if alert:
                raised.append(alert)

        feedback_rate = float(np.mean([r.feedback_triggered for r in recent]))
        if feedback_rate > self.feedback_rate_limit:
            alert = self._emit(
                "excessive_feedback",
                "high" if feedback_rate > 0.9 else "medium",
                f"Feedback fired on {feedback_rate:.0%} of the last {w} games",
                {"feedback_rate": feedback_rate, "window": w},
            )
            if alert:
                raised.append(alert)
        return raised

    def _emit(self, alert_type: str, severity: str, message: str, data: Dict) -> Optional[DegradationAlert]:
        now = self.clock()
        last = self._last_alert.get(alert_type)
        if last is not None and now - last < self.alert_cooldown:
            logger.debug("Suppressed %s alert (cooldown)", alert_type)
            return None

        alert = DegradationAlert(alert_type, severity, message, now, data)
        self._last_alert[alert_type] = now
        self.alerts.append(alert)
        logger.warning("[%s] %s", severity.upper(), message)
        for handler in self._handlers:
            try:
                handler(alert)
            except Exception:
                logger.exception("Alert handler %r raised", handler)
        return alert

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    @staticmethod
    def categorize_trend(change: float, threshold: float) -> str:
        if change > 2 * threshold:
            return "strongly_improving"
        if change > threshold:
            return "improving"
        if change < -2 * threshold:
            return "strongly_declining"
        if change < -threshold:
            return "declining"
        return "stable"

    @staticmethod
    def uncertainty_level(sigma: float) -> str:
        if sigma < 0.1:
            return "very_low"
        if sigma < 0.2:
            return "low"
        if sigma < 0.4:
            return "moderate"
        if sigma < 0.7:
            return "high"
        return "very_high"

    @staticmethod
    def stability_category(feedback_rate: float, alpha_decay: float) -> str:
        if feedback_rate < 0.3 and alpha_decay > 0:
            return "stable"
        if feedback_rate < 0.6:
            return "moderate"
        return "unstable"

    def history_frame(self) -> pd.DataFrame:
        if not self.records:
            return pd.DataFrame(
                columns=["timestamp", "nn_loss", "vae_loss", "feedback_triggered",
                         "alpha", "accuracy", "game_id", "outcome"]
            )
        return pd.DataFrame([r.to_dict() for r in self.records])

    def moving_averages(self, window: Optional[int] = None) -> pd.DataFrame:
        window = window or self.comparison_window
        frame = self.history_frame()
        if frame.empty:
            return pd.DataFrame(columns=["accuracy", "vae_loss", "feedback_rate"])
        return pd.DataFrame(
            {
                "accuracy": frame["accuracy"].rolling(window, min_periods=1).mean(),
                "vae_loss": frame["vae_loss"].rolling(window, min_periods=1).mean(),
                "feedback_rate": frame["feedback_triggered"].astype(float).rolling(window, min_periods=1).mean(),
            }
        )

    def trends(self) -> Dict[str, str]:
        """Trend categories comparing the recent window against the one before."""
        w = self.comparison_window
        frame = self.history_frame()
        if len(frame) < 2 * w:
            return {"accuracy": "insufficient_data", "vae_loss": "insufficient_data", "feedback": "insufficient_data"}
        recent, prior = frame.iloc[-w:], frame.iloc[-2 * w:-w]

        accuracy_change = recent["accuracy"].mean() - prior["accuracy"].mean()
        # Lower loss and fewer feedback triggers count as improvement
        vae_change = prior["vae_loss"].mean() - recent["vae_loss"].mean()
        feedback_change = (
            prior["feedback_triggered"].astype(float).mean()
            - recent["feedback_triggered"].astype(float).mean()
        )
        return {
            "accuracy": self.categorize_trend(accuracy_change, ACCURACY_TREND_THRESHOLD),
            "vae_loss": self.categorize_trend(vae_change, VAE_LOSS_TREND_THRESHOLD),
            "feedback": self.categorize_trend(feedback_change, FEEDBACK_TREND_THRESHOLD),
        }

    def current_metrics(self) -> Dict:
        frame = self.history_frame()
        if frame.empty:
            return {"records": 0}
        recent = frame.iloc[-self.comparison_window:]
        return {
            "records": len(frame),
            "accuracy": float(recent["accuracy"].mean()),
            "nn_loss": float(recent["nn_loss"].mean()),
            "vae_loss": float(recent["vae_loss"].mean()),
            "feedback_rate": float(recent["feedback_triggered"].astype(float).mean()),
            "alpha": float(frame["alpha"].iloc[-1]),
        }

    def team_convergence(self) -> Dict:
        converged = sorted(t for t, m in self.team_metrics.items() if m["converged"])
        return {
            "tracked": len(self.team_metrics),
            "converged": len(converged),
            "converged_teams": converged,
            "teams": dict(self.team_metrics),
        }

    def report(self) -> Dict:
        return {
            "generated_at": self.clock().isoformat(),
            "current": self.current_metrics(),
            "trends": self.trends(),
            "team_convergence": self.team_convergence(),
            "stability": self.stability,
            "recent_alerts": [
                {
                    "type": a.alert_type,
                    "severity": a.severity,
                    "message": a.message,
                    "timestamp": a.timestamp.isoformat(),
                }
                for a in list(self.alerts)[-10:]
            ],
        }
