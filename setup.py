"""
Setup script for mathgrid.

mathgrid is the practice engine behind the multiplication-grid app. It
serves three roles:

1. Grid Model - per-student 12x12 fact mastery with a difficulty guardrail
2. Placement - a deterministic 20-fact diagnostic that picks the guardrail
3. Practice - adaptive sessions that batch grid updates to the store
"""

from setuptools import find_packages, setup

setup(
    name="mathgrid-engine",
    version="1.0.0",
    description="Adaptive multiplication-fact placement and practice engine",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="Right Learning",
    packages=find_packages(include=["mathgrid", "mathgrid.*"]),
    py_modules=["config"],
    python_requires=">=3.11",
    install_requires=[
        # Database
        "sqlalchemy>=2.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
        "postgres": [
            "psycopg2-binary>=2.9.0",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="learning multiplication mastery adaptive education",
)
