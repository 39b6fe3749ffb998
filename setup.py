# setup.py

from setuptools import setup, find_packages

setup(
    name='automatic-eq-optimizer',
    version='1.0.0',
    description='Differential-evolution optimizer for parametric EQ filter chains',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    python_requires='>=3.9',
    install_requires=[
        'numpy',
        'scipy>=1.11',
        'PyQt5',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'auto-eq-optimizer=automatic_eq_optimizer.cli.__main__:main',
        ],
    },
)
