"""
QueryGen - Model-to-SQL Query Compiler
Install: pip install -e .
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="querygen",
    version="1.0.0",
    author="Diegoproggramer",
    author_email="",
    description="Compile declarative models into tenant-aware PostgreSQL queries",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/Diegoproggramer/querygen",
    packages=find_packages(exclude=("tests", "tests.*")),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Code Generators",
        "Topic :: Database",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=[
        "sqlalchemy>=2.0.0",
        "pydantic>=2.0.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "black>=23.0",
            "ruff>=0.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "querygen=querygen.cli:cli_main",
        ],
    },
    keywords="postgresql, sql, generator, multi-tenant, code-generator, crud, python",
    project_urls={
        "Bug Reports": "https://github.com/Diegoproggramer/querygen/issues",
        "Source": "https://github.com/Diegoproggramer/querygen",
    },
)
