from setuptools import find_packages, setup

setup(
    name="dirforge",
    version="0.3.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"dirforge": ["worlds/*.world.yaml"]},
    install_requires=[
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
    python_requires=">=3.10",
    description="dirforge: scaffold generation and additive migration for directory worlds",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: System :: Filesystems",
        "Programming Language :: Python :: 3.12",
    ],
)
