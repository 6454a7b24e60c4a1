from setuptools import setup, find_packages

setup(
    name="pfloc",
    version="1.0.0",
    description="Particle filter localization against line-segment maps, with simulator and planner",
    packages=find_packages(include=["pfloc", "pfloc.*"]),
    py_modules=["main", "doctor"],
    include_package_data=True,
    package_data={"": ["*.json"]},
    install_requires=[
        "pygame>=2.1.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.8",
)
