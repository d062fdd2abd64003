from setuptools import setup, find_namespace_packages

setup(
    name="gradegate",
    version="0.1.0",
    packages=find_namespace_packages(include=["gradegate", "gradegate.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "pydantic>=2.5",
        "pydantic-settings>=2.7",
        "uvicorn>=0.27",
        "PyJWT>=2.10",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "httpx>=0.27",
        ],
    },
)
