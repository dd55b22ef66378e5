from setuptools import find_packages, setup

setup(
    name="flowhooks",
    version="0.1.0",
    description="Lifecycle hook orchestration with validation, timeouts and persisted enable/disable state",
    packages=find_packages(include=["flowhooks", "flowhooks.*"]),
    include_package_data=True,
    package_data={"flowhooks": ["data/*.yaml"]},
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.5",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": ["pytest>=7.4"],
    },
    entry_points={
        "console_scripts": [
            "flowhooks=flowhooks.cli:main",
        ],
    },
)
