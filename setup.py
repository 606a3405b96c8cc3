from setuptools import find_packages, setup

setup(
    name="linguatube-transcripts",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["app", "bootloader", "database"],
    install_requires=[
        "aiohttp>=3.9",
        "fastapi>=0.110",
        "pydantic>=2.5",
        "python-dotenv>=1.0",
        "PyYAML>=6.0",
        "redis>=4.2",
        "SQLAlchemy>=2.0",
        "uvicorn>=0.27",
    ],
    extras_require={
        "test": [
            "httpx>=0.26",
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
    include_package_data=True,
    description="Transcript acquisition and normalization backend (captions, AI transcription, caching)",
    python_requires=">=3.11",
)
