"""Setup script for kafkachain"""
from setuptools import find_packages, setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="kafkachain",
    version="0.1.0",
    author="kafkachain developers",
    description="Tamper-evident hash chains on top of Kafka topics",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: Security :: Cryptography",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.11",
    install_requires=[
        "confluent-kafka>=2.3.0",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "fastapi>=0.104.0",
        "uvicorn>=0.24.0",
        "prometheus-client>=0.19.0",
        "requests>=2.31.0",
    ],
    entry_points={
        "console_scripts": [
            "kafkachain-api=kafkachain.main:run",
        ],
    },
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "httpx>=0.25.0",
        ],
    },
)
