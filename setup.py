#!/usr/bin/env python3
"""
MailOps Supervisor - Confirmation-gated DNS changes for a mail stack.
Supervises the local DNS worker and gates every change behind a reviewed preview.
"""

from setuptools import setup, find_packages
import os

# Read the contents of README file
this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name="mailops-supervisor",
    version="1.0.0",
    author="MailOps",
    description="Worker supervision, in-memory credentials and confirmation-gated DNS changes for mail stacks",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: System :: Systems Administration",
        "Topic :: Internet :: Name Service (DNS)",
    ],
    python_requires=">=3.8",
    install_requires=[
        "psutil>=5.8.0",
        "pyyaml>=6.0",
        "httpx>=0.24.0",
        "pydantic>=2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "black>=22.0.0",
            "flake8>=5.0.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "mailops-supervisor=mailops_supervisor.cli.main:main",
        ],
    },
)
