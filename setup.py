from setuptools import setup, find_packages

setup(
    name="tinyburn",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    install_requires=[
        "pyserial",
        "intelhex",
        "argcomplete",
        "rich",
        "tqdm",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "tinyburn=tinyburn.main:main",
        ],
    },
    package_data={
        "tinyburn": ["data/chips.json"],
    },
    author="Henrik Olsson",
    author_email="henols@gmail.com",
    description="Firmware uploader for ATtiny devices using a TPI programmer sketch or avrdude",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.8",
)
