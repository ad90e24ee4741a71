from setuptools import setup, find_packages

setup(
    name="quotaguard",
    version="0.1.0",
    packages=find_packages(include=["quotaguard", "quotaguard.*"]),
    python_requires=">=3.11",
    install_requires=[
        "redis>=5.0",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
)
