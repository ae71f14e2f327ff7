import io
import os
import re

from setuptools import find_packages, setup


with io.open("flask_mfagate/__init__.py", "rt", encoding="utf8") as f:
    version = re.search(r"__version__ = \"(.*?)\"", f.read()).group(1)


def fpath(name):
    return os.path.join(os.path.dirname(__file__), name)


def read(fname):
    with open(fpath(fname)) as f:
        return f.read()


def desc():
    return read("README.rst")


setup(
    name="Flask-MFAGate",
    version=version,
    license="BSD",
    description=(
        "Multi-factor login gate for Flask applications: signed pending-MFA"
        " credentials, TOTP and backup-code verification, per-user lockout"
        " and enrollment."
    ),
    long_description=desc(),
    long_description_content_type="text/x-rst",
    packages=find_packages(exclude=["tests*"]),
    include_package_data=True,
    zip_safe=False,
    platforms="any",
    install_requires=[
        "cryptography>=3.4.8, <46.0.0",  # Encryption of TOTP secrets at rest
        "Flask>=2, <4",
        "pyotp>=2.9.0, <3.0.0",  # TOTP generation and validation
        "PyJWT>=2.0.0, <3.0.0",  # Pending credential signing
        "SQLAlchemy>=1.4, <3",
        "werkzeug>=2.3, <4",  # Backup code hashing
    ],
    extras_require={
        "redis": ["redis>=4.0.0, <7.0.0"],  # Shared lockout counters
        "qr": [
            "Pillow>=8.0.0, <12.0.0",      # Image processing for QR codes
            "qrcode[pil]>=7.0.0, <9.0.0",  # QR code generation with Pillow
        ],
        "test": ["pytest>=7", "redis>=4.0.0, <7.0.0"],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Web Environment",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: BSD License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Security",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    python_requires=">=3.9",
)
