from setuptools import setup, find_packages

setup(
    name="knowledge_agent",
    version="1.0.0",
    packages=find_packages(exclude=("tests", "tests.*")),
    package_data={"knowledge_agent": ["knowledge/*.json", "knowledge/*.yaml", "knowledge/*.yml"]},
    python_requires=">=3.10",
    install_requires=[
        "requests",
        "pyyaml",
        "tqdm>=4.60",
    ],
    extras_require={
        "test": [
            "pytest>=7",
        ],
    },
    entry_points={
        "console_scripts": [
            "knowledge-agent=knowledge_agent.cli:main",
        ],
    },
    author="Uday Kanth",
    description="A local knowledge store for Rust concepts, patterns, commands and compiler errors.",
)
