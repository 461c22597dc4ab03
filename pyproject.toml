[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rtmpstack"
version = "0.1.0"
description = "RTMP protocol stack: handshake, chunking, messages, AMF0 and connection setup"
requires-python = ">=3.10"
dependencies = []
keywords = ["rtmp", "amf0", "streaming", "h264", "aac", "flv"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["rtmpstack"]

[tool.pytest.ini_options]
addopts = "-ra"
