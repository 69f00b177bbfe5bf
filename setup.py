from setuptools import setup, find_packages

# Read requirements
with open("requirements.txt") as f:
    requirements = f.read().splitlines()

setup(
    name="freeip",
    version="1.0.0",
    description="Find unused IPv4 addresses with an external probe and cache the results",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    packages=find_packages(where=".", include=["freeip", "freeip.*"]),
    package_dir={"": "."},
    include_package_data=True,
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7"],
    },
    entry_points={
        "console_scripts": [
            "freeip=freeip.main:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX",
    ],
    python_requires=">=3.10",
)
