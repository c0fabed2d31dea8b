from setuptools import setup, find_packages

setup(
    name="spherecount",
    version="1.0.0",
    description="Circle detection and counting for uploaded photos",
    author="SphereCount",
    packages=find_packages(include=["spherecount", "spherecount.*"]),
    install_requires=[
        "opencv-python>=4.8.0",
        "numpy>=1.24.0",
        "scipy>=1.10.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.9",
)
