"""Setup script for regmigrate."""

from setuptools import setup, find_packages

setup(
    name="regmigrate",
    version="1.0.0",
    description="Container image migration between OCI/Docker registries",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "requests>=2.28.0",
        "urllib3>=1.26.0",
        "PyYAML>=6.0",
        "tqdm>=4.64.0"
    ],
    extras_require={
        'test': ['pytest>=7.0.0']
    },
    entry_points={
        "console_scripts": [
            "regmigrate=regmigrate.main:main",
        ],
    },
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
