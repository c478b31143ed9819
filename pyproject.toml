[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "robustinternal"
version = "0.1.0"
description = "Helpers for RobustIRC networks: password-authenticated HTTP clients, failure injection, status and health checks, server discovery and configuration updates"
requires-python = ">=3.10"
keywords = ["irc", "robustirc", "raft", "health-check", "failure-injection", "srv"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Chat :: Internet Relay Chat",
    "Topic :: Software Development :: Testing",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "requests",
    "watchdog",
    "dnspython",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["robustinternal"]

[tool.pytest.ini_options]
addopts = "-ra"
