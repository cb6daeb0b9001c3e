from setuptools import setup

setup(
        name="dronerunner",
        version="0.1.0",
        description="Fly a drone through a fixed sequence of timed steps",
        packages=["dronerunner"],
        python_requires=">=3.8",
        install_requires=[
            "dronekit",
            "flask",
            "pymavlink",
            "pyyaml",
            "requests",
            ],
        extras_require={
            "minidrone": [
                "pyparrot",
                "untangle",
                "zeroconf",
                "bluepy",
                ],
            "test": [
                "pytest",
                ],
            },
        )
