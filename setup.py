"""Install the camper identity gateway package."""

from setuptools import setup, find_packages

setup(
    name='camper-identity',
    version='0.1.0',
    packages=[f'camper.{package}' for package
              in find_packages('./camper', exclude=['*test*'])],
    python_requires='>=3.8',
    install_requires=[
        "flask",
        "werkzeug",
        "flask-sqlalchemy",
        "sqlalchemy",
        "python-dateutil",
        "pytz",
        "pyjwt>=2",
        "redis>=4",
        "fakeredis",
        "retry",
        "python-json-logger",
    ],
    extras_require={
        "test": [
            "pytest",
            "hypothesis",
            "mimesis",
        ],
    },
    zip_safe=False
)
