from setuptools import setup

setup(
    name="dissect.regfs",
    version="1.0.0",
    packages=["dissect.regfs"],
    install_requires=[
        "dissect.cstruct>=3.0.dev,<4.0.dev",
        "dissect.util>=3.0.dev,<4.0.dev",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
)
