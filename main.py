import uvicorn
import sys

from gallery import app, PORT

if __name__ == "__main__":
    # This check is crucial for distinguishing between development and packaged mode
    is_packaged = getattr(sys, 'frozen', False)

    if is_packaged:
        # Running in a PyInstaller bundle.
        uvicorn.run(
            app,
            host="127.0.0.1",
            port=PORT
        )
    else:
        # Running as a standard Python script.
        uvicorn.run(
            "gallery:app",
            host="127.0.0.1",
            port=PORT,
            reload=True
        )
