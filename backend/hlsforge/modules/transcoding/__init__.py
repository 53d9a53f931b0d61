"""HLS transcoding module."""
