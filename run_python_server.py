#!/usr/bin/env python3
"""
Standalone script to run the bundle store API
"""
import os

import uvicorn

if __name__ == "__main__":
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 5000))
    reload = os.getenv("NODE_ENV", "development") == "development"

    print(f"Starting bundle store API on {host}:{port}")
    print(f"Shopify API version: {os.getenv('SHOPIFY_API_VERSION', '2024-10')}")
    print(f"Cart transform function: {os.getenv('CART_TRANSFORM_FUNCTION_ID') or '(not configured)'}")
    print(f"API Documentation: http://{host}:{port}/api/docs")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info" if not reload else "debug"
    )
