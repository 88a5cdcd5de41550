#!/usr/bin/env python3
"""
Setup script for CBMCLink - configurational-bias Monte Carlo link growth.

Installation:
    pip install -e .                    # Development install
    pip install .                       # Regular install

Testing:
    python -m unittest discover -s test
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding='utf-8') if readme_file.exists() else ""

# Read requirements if exists
requirements_file = Path(__file__).parent / "requirements.txt"
if requirements_file.exists():
    requirements = [line.strip() for line in requirements_file.read_text().splitlines()
                   if line.strip() and not line.startswith('#')]
else:
    # Fallback: specify requirements directly
    requirements = [
        'numpy>=1.20.0',
        'scipy>=1.7.0',
        'openmm>=7.7.0',
    ]

setup(
    name="cbmclink",
    version="1.0.0",
    description="Configurational-bias Monte Carlo link growth with Rosenbluth weights",
    long_description=long_description,
    long_description_content_type="text/markdown",

    # Package configuration
    packages=find_packages(include=['cbmclink', 'cbmclink.*']),

    # Dependencies
    install_requires=requirements,

    python_requires='>=3.8',

    # Classifiers for PyPI
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Science/Research',
        'Topic :: Scientific/Engineering :: Chemistry',
        'Topic :: Scientific/Engineering :: Physics',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Programming Language :: Python :: 3.13',
    ],

    # Keywords for PyPI
    keywords='monte-carlo configurational-bias rosenbluth molecular-simulation openmm chemistry',
)
