#!/usr/bin/env python3
"""
Development server runner for the Protected Content Matcher API
Includes auto-reload, logging, and environment checking
"""

import os
import sys
import uvicorn
from pathlib import Path

# Add the parent directory to Python path
sys.path.append(str(Path(__file__).parent.parent))

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

def check_environment():
    """Check that at least one embedding backend and a reference store are configured."""
    backend_vars = ["GEMINI_API_KEY", "HUGGINGFACE_API_KEY"]

    optional_vars = [
        "REFERENCE_STORE",
        "REFERENCE_FIXTURE",
        "EMBEDDING_SPACE",
        "API_HOST",
        "API_PORT",
        "DEBUG",
        "FRAME_WORKERS",
    ]

    if not any(os.getenv(var) for var in backend_vars):
        print(f"❌ No embedding backend configured. Set one of: {', '.join(backend_vars)}")
        return False

    for var in backend_vars:
        print(f"  {var}: {'set' if os.getenv(var) else 'Not set'}")

    if os.getenv("REFERENCE_STORE", "postgres") == "postgres" and not os.getenv("DATABASE_URL"):
        print("❌ DATABASE_URL is required when REFERENCE_STORE=postgres")
        return False

    print("✅ Required environment variables found")

    print("\n📋 Optional configurations:")
    for var in optional_vars:
        print(f"  {var}: {os.getenv(var, 'Not set')}")

    return True

def check_dependencies():
    """Check if all required dependencies are available."""
    required_modules = [
        "fastapi",
        "uvicorn",
        "psycopg2",
        "torch",
        "transformers",
        "PIL",  # Pillow imports as PIL
        "numpy",
        "requests",
        "structlog"
    ]

    missing_modules = []
    for module in required_modules:
        try:
            __import__(module)
        except ImportError:
            missing_modules.append(module)

    if missing_modules:
        print(f"❌ Missing required Python modules: {', '.join(missing_modules)}")
        print("Please run: pip install -e .")
        return False

    print("✅ All required dependencies found")
    return True

def main():
    """Main entry point for development server."""
    print("🛡️  Protected Content Matcher - Development Server")
    print("=" * 50)

    if not check_environment():
        sys.exit(1)

    if not check_dependencies():
        sys.exit(1)

    from app.services.video_processing import check_ffmpeg_installation
    if not check_ffmpeg_installation():
        print("⚠️  ffmpeg not found - video uploads will fail")

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", 8000))
    debug = os.getenv("DEBUG", "true").lower() == "true"

    print(f"\n🚀 Starting development server...")
    print(f"   Host: {host}")
    print(f"   Port: {port}")
    print(f"   Debug: {debug}")
    print(f"   Docs: http://{host}:{port}/docs")
    print("\n⏹️  Press Ctrl+C to stop the server")
    print("=" * 50)

    try:
        uvicorn.run(
            "app.main:app",
            host=host,
            port=port,
            reload=debug,
            log_level="debug" if debug else "info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\n🛑 Server stopped by user")

if __name__ == "__main__":
    main()
