"""
Setup script for the slide-sync package.

This package provides the client-side synchronization and caching core
for live slide presentations: push delivery with polling fallback, local
artifact caching and audience presence.
"""
from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="slide-sync",
    version="1.0.0",
    author="Slide Sync Team",
    description="Live slide position synchronization and artifact caching for presentation viewers",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: Communications",
        "Framework :: AsyncIO",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.11",
    install_requires=[
        # AWS SDK (DynamoDB artifact store, CloudWatch metrics)
        "boto3>=1.28.85",
        "botocore>=1.31.85",

        # HTTP client (row store, artifact downloads)
        "requests>=2.31.0",

        # Realtime transport
        "websockets>=13.0",

        # Local artifact store
        "SQLAlchemy>=2.0.0",
    ],
    extras_require={
        "dev": [
            # Testing
            "pytest>=7.4.3",
            "pytest-cov>=4.1.0",
            "pytest-asyncio>=0.21.0",
            "moto>=5.0.0",

            # Code quality
            "black>=23.11.0",
            "flake8>=6.1.0",
            "mypy>=1.7.1",

            # Type stubs
            "boto3-stubs[dynamodb,cloudwatch]>=1.28.85",
            "types-requests>=2.31.0",
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
