from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

install_requires = [
    "requests>=2.25.0",
    "python-dotenv>=0.15.0",
    "colorama>=0.4.4",  # For colorized terminal output
]

setup(
    name="watchsync",
    version="1.0.0",
    description="Viewing progress tracking with continue-watching and backend sync",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.8",
    install_requires=install_requires,
    extras_require={
        "test": [
            "pytest>=6.0",
            "pytest-mock>=3.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "watchsync=watchsync.cli:main",
        ],
    },
)
