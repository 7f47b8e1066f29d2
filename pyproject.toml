[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "audiostream"
version = "0.1.0"
description = "Range-based streaming download, range bookkeeping and AES-CTR decryption of audio files"
requires-python = ">=3.10"
keywords = ["audio", "streaming", "range-set", "aes-ctr", "download"]
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
    "Topic :: Multimedia :: Sound/Audio",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["audiostream"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
