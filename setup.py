from setuptools import setup, find_packages

setup(
    name="request-pipeline",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "fastapi",
        "starlette>=0.33",
        "pydantic>=2",
        "pydantic-core",
        "structlog",
        "python-multipart",
        "opentelemetry-api>=1.27",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
            "opentelemetry-sdk>=1.27",
        ],
    },
    description="Request processing pipeline for HTTP APIs: routing, body parsing, procedures, validation, error handling and telemetry.",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Framework :: FastAPI",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
)
