[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gpsdriver"
version = "0.1.0"
description = "Driver for u-blox UBX receivers over serial, TCP or a recorded file, producing local east/north/up poses, IMU samples and GGA feedback"
requires-python = ">=3.10"
dependencies = [
    "pyserial",
]
keywords = [
    "gps",
    "gnss",
    "rtk",
    "ublox",
    "ubx",
    "nmea",
    "rtcm",
    "utm",
    "robotics",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Interface Engine/Protocol Translator",
    "Topic :: Scientific/Engineering :: GIS",
    "Topic :: Terminals :: Serial",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
gpsdriver = "gpsdriver.node:main"

[tool.hatch.build.targets.wheel]
packages = ["gpsdriver"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
