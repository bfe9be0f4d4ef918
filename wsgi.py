#!/usr/bin/env python3
from dotenv import load_dotenv

# Load environment variables from .env file before the config class is read
load_dotenv()

from rentledger import create_app  # noqa: E402

app = create_app()
