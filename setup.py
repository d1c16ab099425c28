"""
Setup configuration for the mailbridge functions service.

Usage:
    pip install -e .            # Editable/development install
    pip install -e ".[test]"    # With the test toolchain
    mailbridge                  # Serve the API with uvicorn
"""
from setuptools import setup, find_packages
import os

# Read requirements from requirements.txt
def read_requirements():
    """Parse requirements.txt and return list of dependencies."""
    req_file = os.path.join(os.path.dirname(__file__), 'requirements.txt')
    with open(req_file, 'r', encoding='utf-8') as f:
        return [line.strip() for line in f if line.strip() and not line.startswith('#')]

setup(
    name="mailbridge",
    version="1.0.0",
    description="Serverless backend functions for an AI email-organising SaaS: mailbox connect, label sync, AI drafting",
    python_requires=">=3.9",

    packages=find_packages(
        where=".",
        exclude=["tests*", "*.tests", "*.tests.*", "tests.*"]
    ),

    install_requires=read_requirements(),

    extras_require={
        "test": [
            "pytest>=7.0",
            "httpx>=0.24",
        ],
    },

    entry_points={
        "console_scripts": [
            "mailbridge=mailbridge.api.service:main",
        ],
    },

    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],

    zip_safe=False,
)
