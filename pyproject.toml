[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "agbhw"
version = "0.1.0"
description = "Cycle-level models of handheld console hardware: sound FIFO, interrupts, keypad, DMA and the picture processing unit."
requires-python = ">=3.10"
dependencies = []
keywords = ["emulator", "emulation", "ppu", "dma", "interrupts", "hardware-model"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["agbhw"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
