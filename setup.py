from setuptools import setup, find_packages

setup(
    name="water-controller-relay",
    version="0.1.0",
    description="Relay water controller serial telemetry to WebSocket clients",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "pyserial>=3.5",
        "websockets>=13.0",
        "rich>=13.5.0",
        "pytest>=7.4.0",
        "pytest-cov>=4.1.0",
        "pytest-asyncio>=0.21.0",
    ],
    entry_points={
        "console_scripts": [
            "water-relay=src.relay.app:main",
            "water-relay-client=src.relay.client:main",
            "water-relay-monitor=src.tui.monitor:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
