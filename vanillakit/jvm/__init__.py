"""JVM artifact handling: archives, class files, remapping, widening, decompiling."""
