#!/usr/bin/env python3
"""
Duplex Voice - WebSocket API Server

API server that runs full-duplex voice conversations over WebSocket.
The browser client captures the microphone and plays synthesized speech;
everything else happens here.

Usage:
    python server.py [--host HOST] [--port PORT]

Example:
    python server.py --host 0.0.0.0 --port 8000
"""

import argparse
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from duplex_voice import __version__
from duplex_voice.server.config import Settings
from duplex_voice.server.orchestrator import ConnectionOrchestrator

# Create FastAPI app
app = FastAPI(
    title="Duplex Voice API",
    description="WebSocket API for full-duplex voice conversations with barge-in",
    version=__version__
)

# Add CORS middleware to allow client connections from any origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify your frontend domain
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def get_root():
    """Root endpoint with API information."""
    return {
        "name": "Duplex Voice API",
        "version": __version__,
        "status": "running",
        "endpoints": {
            "websocket": "/ws",
            "health": "/health",
            "docs": "/docs"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    settings = Settings.from_env()

    return {
        "status": "healthy",
        "service": "duplex-voice",
        "version": __version__,
        "deepgram_configured": settings.recognition_configured,
        "groq_configured": settings.backend_configured,
        "groq_model": settings.groq_model if settings.backend_configured else None,
    }


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for voice conversations.

    Each connection gets its own isolated ConnectionOrchestrator instance.

    Protocol:
        Client sends:
            - {"type": "start_conversation", "mode": "voice" | "text"}
            - {"type": "stop_conversation"}
            - {"type": "audio", "audio": "<base64 PCM16 mono 16 kHz>"}
            - {"type": "text_message", "text": "..."}
            - {"type": "playback_started" | "playback_complete" | "playback_error", "utterance_id": N}
            - {"type": "visibility", "hidden": true | false}
            - {"type": "microphone_unavailable"}

        Server sends:
            - {"event": "connected", "session_id": "...", "capabilities": {...}}
            - {"event": "status", "state": "idle" | "listening" | "thinking" | "speaking" | "unavailable"}
            - {"event": "user_transcript", "text": "..."}
            - {"event": "agent_reply", "text": "...", "spoken": bool, "interruptible": bool}
            - {"event": "play_audio", "audio": "<base64 mp3>", "utterance_id": N}
            - {"event": "stop_playback", "utterance_id": N}
            - {"event": "error", "message": "..."}
    """
    await websocket.accept()

    settings = Settings.from_env()
    if not settings.backend_configured:
        print("[Server] ERROR: GROQ_API_KEY not found in environment!")
        await websocket.send_json({
            "event": "error",
            "message": "Server configuration error: GROQ_API_KEY not set"
        })
        await websocket.close()
        return

    if not settings.recognition_configured:
        print("[Server] WARNING: DEEPGRAM_API_KEY not set, voice mode unavailable")

    print(f"[Server] Using Groq model: {settings.groq_model} ⚡")

    # Create isolated orchestrator for this connection
    orchestrator = ConnectionOrchestrator(websocket, settings)

    try:
        print(f"\n{'='*60}")
        print(f"[Server] New client connected! Session: {orchestrator.session_id}")
        print(f"{'='*60}\n")

        # Start background workers for this connection
        await orchestrator.start_workers()

        await websocket.send_json({
            "event": "connected",
            "message": f"Connected to Duplex Voice (Session: {orchestrator.session_id})",
            "session_id": orchestrator.session_id,
            "capabilities": orchestrator.capabilities,
        })

        # Main message loop
        while True:
            data = await websocket.receive_json()

            event_type = data.get('type')
            if event_type != "audio":
                print(f"[Server] Received event: {event_type}")

            # Route event to orchestrator
            await orchestrator.handle_client_event(data)

    except WebSocketDisconnect:
        print(f"\n[Server] Client disconnected: {orchestrator.session_id}")

    except Exception as e:
        print(f"\n[Server] ERROR in WebSocket connection: {e}")
        import traceback
        traceback.print_exc()

    finally:
        # Clean up orchestrator resources
        print(f"[Server] Cleaning up session: {orchestrator.session_id}")
        await orchestrator.cleanup()
        print(f"[Server] Session cleaned up: {orchestrator.session_id}\n")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Duplex Voice Server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")

    args = parser.parse_args()

    print("\n" + "="*60)
    print("🎙️  Duplex Voice API Server")
    print("="*60)
    print(f"Version: {__version__}")
    print(f"Host: {args.host}")
    print(f"Port: {args.port}")
    print(f"WebSocket URL: ws://{args.host}:{args.port}/ws")
    print(f"API Docs: http://{args.host}:{args.port}/docs")
    print("="*60 + "\n")

    uvicorn.run(
        "server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info"
    )
