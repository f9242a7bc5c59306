from setuptools import setup, find_packages

setup(
    name="metricsd-client",
    version="1.0",
    description="Client for the metricsd stats daemon",
    packages=find_packages(exclude=["tests"]),
    install_requires=[
        "baseplate",
    ],
    extras_require={
        "test": [
            "mock",
            "pytest",
        ],
    },
)
