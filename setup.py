from setuptools import setup, find_packages

with open("README.md") as f:
    readme = f.read()

with open("fabjoin/__init__.py") as f:
    for line in f:
        if line.startswith("__version__"):
            version = line.split('"')[1]

setup(
    name="fabjoin",
    version=version,
    description="fabjoin - Join a Hyperledger Fabric network from its control plane",
    long_description=readme,
    long_description_content_type="text/markdown",
    author="fabjoin contributors",
    packages=find_packages(exclude=("fabjoin.tests", "fabjoin.tests.*")),
    include_package_data=True,
    keywords=["fabjoin", "connection profile", "hyperledger", "fabric", "blockchain"],
    license="Apache License v2.0",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Topic :: Utilities",
        "License :: OSI Approved :: Apache Software License",
    ],
    scripts=[
        "fabjoin/cli/fabjoin-cli",
    ],
    install_requires=[
        "PyYAML>=5.3.1",
        "prompt_toolkit>=3.0.36",
        "requests>=2.32",
        "cryptography>=41.0",
        "pyOpenSSL>=23.2",
    ],
    python_requires=">=3.8",
    setup_requires=["setuptools>=41.1.0"],
)
