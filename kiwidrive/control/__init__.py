"""kiwidrive.control: operator menu that runs from a staged drive.

  - Library:  rebuild library.xml from content/ via kiwix-manage
  - Server:   start/stop kiwix-serve, tracked by server.pid
  - Content:  optional content pack download
  - Menu:     the numbered control loop tying them together
"""
