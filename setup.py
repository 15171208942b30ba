from setuptools import setup, find_packages

setup(
    name="signage-player",
    version="0.1.0",
    description="Digital signage player: playlist scheduling, pairing and sync engine",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.8",
    install_requires=[
        "PyGObject>=3.42",
        "PyYAML>=6.0",
        "pyzmq>=25.0",
        "requests>=2.31.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "black>=23.0.0",
            "pylint>=2.17.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "signage-player=signage_player.player:main",
            "signage-admin=signage_player.admin:main",
        ]
    },
)
