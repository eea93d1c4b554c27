from setuptools import setup, find_packages

setup(
    name="team-strength-forecaster",
    version="0.1.0",
    description="Latent team strength, possession transition prediction and Monte Carlo game simulation",
    author="Ben Rosen",
    packages=find_packages(include=["strength_forecaster", "strength_forecaster.*"]),
    install_requires=[
        "numpy>=1.22.4",
        "pandas>=1.5.3",
        "pytz>=2022.7",
        "scipy>=1.10.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "strength-forecaster=strength_forecaster.main:main",
        ],
    },
)
