#!/usr/bin/env python3
"""
CloudFormation to Terraform Exporter
Imports the resources of a deployed AWS CloudFormation stack into Terraform
state and writes Terraform configuration that references, rather than copies,
the values resources share.
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="cfn-terraform-exporter",
    version="1.0.0",
    author="CFN Terraform Exporter Team",
    description="Export deployed AWS CloudFormation stacks to Terraform configuration and state",
    long_description=long_description,
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    package_data={"cfn_terraform_exporter": ["data/*.json", "data/*.yaml"]},
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: System Administrators",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: System :: Systems Administration",
        "Topic :: Software Development :: Code Generators",
    ],
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.0.0"],
    },
    entry_points={
        "console_scripts": [
            "cf2tf-export=cfn_terraform_exporter.cli:main",
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
