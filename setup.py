from setuptools import setup, find_packages

setup(
    name="langpad",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pydantic>=2.0",
        "loguru>=0.7",
        "openai>=1.0",
        "opentelemetry-api",
        "opentelemetry-sdk",
    ],
    extras_require={
        "test": ["pytest", "httpx"],
    },
    entry_points={
        "console_scripts": [
            "langpad=langpad.cli:main",
        ],
    },
    python_requires=">=3.9",
)
