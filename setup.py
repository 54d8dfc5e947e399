from setuptools import setup, find_packages

setup(
    name="gentlang",
    version="0.1.0",
    packages=find_packages(include=["gentlang", "gentlang.*"]),
    py_modules=["gent"],
    package_data={"gentlang": ["grammar.lark"]},
    install_requires=[
        "lark",
        "pydantic>=2.0",
        "networkx>=3.0",
        "loguru>=0.7",
        "openai>=1.0",
        "anthropic",
        "python-dotenv",
        "requests",
        "opentelemetry-api",
        "opentelemetry-sdk",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "gent=gent:main",
        ],
    },
    python_requires=">=3.10",
)
