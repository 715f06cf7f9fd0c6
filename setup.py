from setuptools import setup, find_packages

setup(
    name="pypcdview",
    version="0.1",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        'numpy<2',
        'scipy',
        'open3d',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio',
        ],
    },
)
