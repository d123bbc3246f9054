from setuptools import setup

setup(
    name="hookflow",
    version="0.1.0",
    description="Event-triggered workflow execution engine",
    packages=["hookflow"],
    python_requires=">=3.8",
    install_requires=[
        "click>=8.0",
        "rich>=13.0.0",
        "PyYAML>=6.0",
        "toml>=0.10",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "hookflow=hookflow.__main__:main",
        ]
    },
  )
