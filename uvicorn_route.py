#!/usr/bin/env python3
import uvicorn
from circdesk.app import app

if __name__ == "__main__":
    print("Starting uvicorn server on port 8080...")
    uvicorn.run(app, host="0.0.0.0", port=8080, log_level="info")
