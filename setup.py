from setuptools import setup, find_packages

setup(
    name="quotagate",
    version="0.1.0",
    packages=find_packages(include=["quotagate", "quotagate.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "pydantic>=2",
        "pydantic-settings>=2",
        "redis>=5",
        "cryptography",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "fakeredis[lua]>=2.20",
            "httpx",
        ],
    },
)
