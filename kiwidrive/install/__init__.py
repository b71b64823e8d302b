"""kiwidrive.install: stage a portable Kiwix deployment onto a removable drive."""
