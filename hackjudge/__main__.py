import os

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "hackjudge.main:app",
        host=os.getenv("JUDGING_HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
