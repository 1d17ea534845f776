"""Setup script for the flowpilot package."""

from setuptools import setup, find_packages

setup(
    name="flowpilot",
    version="0.1.0",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "structlog>=23.2",
        "httpx>=0.26",
        "prometheus-client>=0.19",
        "tenacity>=8.2",
        "langchain-core>=0.2",
        "langchain-ollama>=0.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
    description="flowpilot - adaptive multi-step task execution over external tool providers",
    author="flowpilot Team",
)
