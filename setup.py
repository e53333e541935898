from setuptools import find_packages, setup

setup(
    name="posetree",
    version="0.1.0",
    description="Randomized regression trees mapping image patches to head pose.",
    packages=find_packages(include=["posetree", "posetree.*"]),
    python_requires=">=3.10",
    install_requires=[
        "numpy",
        "torch",
    ],
    extras_require={
        "test": ["pytest"],
    },
)
